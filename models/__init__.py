"""Data models for the provider discovery service"""
