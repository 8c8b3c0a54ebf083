from .product import Product, ProductVariant
from .supplier import Supplier
from .location import Warehouse, Shop
