"""World session protocol and the backends that implement it."""
