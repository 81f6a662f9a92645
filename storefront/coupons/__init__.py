"""
Coupon validation and back-office coupon management.
"""
