"""Pure domain layer: DTOs, validation rules, fiscal calendar, clock."""
