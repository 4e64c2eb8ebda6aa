from .story_upload import StoryUploadWorkflow

__all__ = ["StoryUploadWorkflow"]
