"""
Provider adapter and registry tests.
"""
