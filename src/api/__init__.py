"""
HTTP control plane for the form submission scheduler.
"""
