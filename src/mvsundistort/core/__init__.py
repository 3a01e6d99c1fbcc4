"""
Camera models, poses and the sparse reconstruction container.
"""
