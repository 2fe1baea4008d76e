"""
Faster R-CNN box-head modules: layers, poolers, ResNet heads and ROI feature extractors.
"""
