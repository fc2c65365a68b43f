"""TCP port reachability monitor with webhook alerts and mtr traces."""
