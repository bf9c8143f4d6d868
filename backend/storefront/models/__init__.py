from .auth import User, SessionToken
from .catalog import Category, Product, ProductVariant, StockMovement
from .carts import Cart, CartItem
from .coupons import Coupon, CouponUsage
from .orders import Order, OrderLine, OrderStatusHistory
from .bookings import Service, ServicePricing, Booking
from .enrollments import Course, Enrollment
from .payments import PaymentTransaction, WebhookEvent
from .documents import DocumentSequence
from .notifications import Notification

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product', 'ProductVariant', 'StockMovement',
    'Cart', 'CartItem',
    'Coupon', 'CouponUsage',
    'Order', 'OrderLine', 'OrderStatusHistory',
    'Service', 'ServicePricing', 'Booking',
    'Course', 'Enrollment',
    'PaymentTransaction', 'WebhookEvent',
    'DocumentSequence',
    'Notification',
]
