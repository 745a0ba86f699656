"""Cluster-resource storage for IP pools and cluster-wide reservations."""