from .allocator import AddressAllocator

__all__ = ["AddressAllocator"]
