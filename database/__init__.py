"""Database package for the Attribution Engine"""
