"""Runtime services: model backend, capability servers, tools and the runner."""
