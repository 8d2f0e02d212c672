"""Address codec and configuration helpers"""
