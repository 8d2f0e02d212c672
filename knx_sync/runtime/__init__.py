"""Live bus synchronization"""
