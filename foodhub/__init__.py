"""
                Foodhub Delivery Marketplace

Backend for a food-delivery marketplace: restaurants publish menus,
customers authenticate and place orders, staff track the order lifecycle.

Author: Khalil Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil Bannouri"
