"""
Mailcast Modules
================

Collection of Flask blueprint modules for newsletter campaigns.
"""

__all__ = ['campaigns', 'subscribers']
