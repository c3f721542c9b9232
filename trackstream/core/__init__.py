"""
Core streaming engine.

The `RangeResponder` answers byte-range requests, delegating to the
`TrackFetcher`, which resolves sources through the `SourceResolver` and keeps
the audio cache populated. `CatalogService` carries the plain metadata queries.
"""
