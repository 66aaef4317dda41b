"""Pure domain core: clock, DTOs, money split and aggregate math."""
