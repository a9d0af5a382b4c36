"""
cpanel - request-context pipeline for the bot control panel
"""
__version__ = "1.4.0"
