"""HTTP layer: auth, dependencies, middleware and routers."""
