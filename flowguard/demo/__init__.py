"""
FlowGuard demo application.
"""
