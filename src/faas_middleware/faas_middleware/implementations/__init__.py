# ABOUTME: Implementations package for the middleware pipeline library
# ABOUTME: Concrete implementations of the interfaces package contracts
