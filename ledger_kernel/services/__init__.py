"""Write-side services.  Services flush; callers commit."""
