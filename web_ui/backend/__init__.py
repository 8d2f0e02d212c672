"""Flask backend of the admin web interface"""
