"""Grace period requests for disputed reviews."""
