"""
Money primitives, shipping rules and the order total calculator.
"""
