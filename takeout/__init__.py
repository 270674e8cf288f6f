"""
                Takeout Ordering Backend

Order lifecycle, shopping cart, payment callbacks, merchant
notifications and scheduled order-timeout sweeps for a
food-ordering platform.

License: MIT
"""

__version__ = "1.0.0"
