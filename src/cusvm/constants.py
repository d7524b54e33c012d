"""Compile-time sizes shared by the backends and the solver."""

# Threads per block dimension of the 2D CUDA kernels.
THREAD_BLOCK_SIZE = 16

# Number of features loaded into shared memory per tile during assembly.
# Each thread of a block loads one element, so this equals THREAD_BLOCK_SIZE.
FEATURE_BLOCK_SIZE = 16

# Trailing elements reserved per matrix dimension for block-aligned access.
PADDING_SIZE = THREAD_BLOCK_SIZE

# Threads per block of the 1D CUDA kernels.
LINEAR_BLOCK_SIZE = 64

# The CG residual is recomputed exactly every this many iterations.
RESIDUAL_REFRESH_INTERVAL = 50
