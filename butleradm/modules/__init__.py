"""
Butler administration modules.
"""
