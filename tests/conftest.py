import jax

# All response quantities are compared at double precision
jax.config.update("jax_enable_x64", True)
