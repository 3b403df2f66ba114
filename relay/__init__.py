"""relay: HTTP ingress -> event router -> durable queue -> consumer workers."""
