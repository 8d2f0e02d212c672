"""Admin web interface of the KNX state bridge"""
