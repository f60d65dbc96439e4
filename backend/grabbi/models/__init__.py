from .auth import User, SessionToken, PasswordResetToken, LoyaltyHistory
from .franchise import Franchise, FranchiseStaff, StoreHours
from .catalog import Category, Subcategory, Product, ProductImage, FranchiseProduct, SkuSequence
from .orders import CartItem, Order, OrderItem
from .promotions import Promotion, FranchisePromotion

__all__ = [
    'User', 'SessionToken', 'PasswordResetToken', 'LoyaltyHistory',
    'Franchise', 'FranchiseStaff', 'StoreHours',
    'Category', 'Subcategory', 'Product', 'ProductImage', 'FranchiseProduct', 'SkuSequence',
    'CartItem', 'Order', 'OrderItem',
    'Promotion', 'FranchisePromotion',
]
