"""Flask application package"""
