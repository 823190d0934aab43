"""Batch generation engine.

outline_segmenter -> progress_store (over kv_store) -> unit_executor (over
workflow_client, normalizing via result_merger) -> batch_orchestrator.
"""
