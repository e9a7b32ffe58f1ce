"""Merchant segmentation — one-hot encoding and k-means with sampled K search."""
