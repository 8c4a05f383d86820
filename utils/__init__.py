"""Utilities package for the credits API"""
