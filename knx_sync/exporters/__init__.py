"""Writers persisting imported group addresses"""
