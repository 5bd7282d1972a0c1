"""
Browser session: the driver interface and its Playwright implementation
"""
