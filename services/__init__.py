"""Service layer for the virtual try-on studio"""
