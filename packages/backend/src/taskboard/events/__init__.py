"""Event kinds, domain snapshots, mutations and the payload encoder."""
