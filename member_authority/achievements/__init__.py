"""Badge catalog and achievement evaluation."""
