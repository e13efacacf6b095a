# Services package.
#
#   article_service  — article queries, paging, tag cloud and writes
#   article_cache    — read-through caching of the public article reads
#   comment_service  — comment listing and append-only creation
#
# All service functions accept an AsyncSession as their first argument.
# Reads leave the transaction to the ``get_db`` dependency; writes commit
# themselves so cache invalidation follows a durable change.
