"""Audio processing: normalization, segmentation and acoustic descriptors."""
