"""Object and file stores"""
