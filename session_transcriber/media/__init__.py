"""Media probing, planning and segmentation."""
