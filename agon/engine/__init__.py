"""Turn engine, scheduler and the job handlers around them."""
