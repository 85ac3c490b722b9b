"""
gtask_sync.sync - Change detection, execution and orchestration
"""
