"""
Menu domain.

- `models`: rows, read models and request/response schemas.
- `engine`: the relationship engine (transactional writes).
- `queries`: the query assembler (reads with batched association loads).
"""
