"""
Region-proposal container used by the ROI box head.

A BoxList holds the boxes of a single image together with the image size
and any per-box fields (scores, labels, ...). Coordinates use the
pixel-inclusive convention: a box [x1, y1, x2, y2] covers x2 - x1 + 1 pixels.
"""

import torch
from typing import Dict, List, Tuple

FLIP_LEFT_RIGHT = 0
FLIP_TOP_BOTTOM = 1

VALID_MODES = ("xyxy", "xywh")


class BoxList:
    """
    Set of bounding boxes for one image.

    Args:
        bbox: Tensor or nested list of shape [N, 4]
        image_size: (width, height) of the image the boxes belong to
        mode: "xyxy" or "xywh"
    """

    def __init__(self, bbox, image_size: Tuple[int, int], mode: str = "xyxy"):
        device = bbox.device if isinstance(bbox, torch.Tensor) else torch.device("cpu")
        bbox = torch.as_tensor(bbox, dtype=torch.float32, device=device)
        if bbox.numel() == 0:
            bbox = bbox.reshape(0, 4)
        if bbox.ndimension() != 2:
            raise ValueError(f"bbox should have 2 dimensions, got {bbox.ndimension()}")
        if bbox.size(-1) != 4:
            raise ValueError(f"last dimension of bbox should have a size of 4, got {bbox.size(-1)}")
        if mode not in VALID_MODES:
            raise ValueError(f"mode should be one of {VALID_MODES}, got '{mode}'")

        self.bbox = bbox
        self.size = tuple(image_size)  # (width, height)
        self.mode = mode
        self.extra_fields: Dict[str, torch.Tensor] = {}

    # --- Fields ---

    def add_field(self, field, field_data):
        self.extra_fields[field] = field_data

    def get_field(self, field):
        if field not in self.extra_fields:
            raise KeyError(f"Field '{field}' not found in BoxList (fields: {self.fields()})")
        return self.extra_fields[field]

    def has_field(self, field):
        return field in self.extra_fields

    def fields(self) -> List[str]:
        return list(self.extra_fields.keys())

    def _copy_extra_fields(self, other):
        for k, v in other.extra_fields.items():
            self.extra_fields[k] = v

    # --- Coordinate modes ---

    def convert(self, mode):
        if mode not in VALID_MODES:
            raise ValueError(f"mode should be one of {VALID_MODES}, got '{mode}'")
        if mode == self.mode:
            return self

        xmin, ymin, xmax, ymax = self._split_into_xyxy()
        if mode == "xyxy":
            bbox = torch.cat((xmin, ymin, xmax, ymax), dim=-1)
        else:
            bbox = torch.cat((xmin, ymin, xmax - xmin + 1, ymax - ymin + 1), dim=-1)

        boxes = BoxList(bbox, self.size, mode=mode)
        boxes._copy_extra_fields(self)
        return boxes

    def _split_into_xyxy(self):
        if self.mode == "xyxy":
            xmin, ymin, xmax, ymax = self.bbox.split(1, dim=-1)
            return xmin, ymin, xmax, ymax

        xmin, ymin, w, h = self.bbox.split(1, dim=-1)
        return (
            xmin,
            ymin,
            xmin + (w - 1).clamp(min=0),
            ymin + (h - 1).clamp(min=0),
        )

    # --- Geometry ---

    def area(self):
        box = self.bbox
        if self.mode == "xyxy":
            return (box[:, 2] - box[:, 0] + 1) * (box[:, 3] - box[:, 1] + 1)
        return box[:, 2] * box[:, 3]

    def resize(self, size):
        """
        Rescale boxes to a new image size.

        Args:
            size: Target (width, height)

        Returns:
            New BoxList in the same mode
        """
        ratios = tuple(float(s) / float(s_orig) for s, s_orig in zip(size, self.size))
        if ratios[0] == ratios[1]:
            ratio = ratios[0]
            boxes = BoxList(self.bbox * ratio, size, mode=self.mode)
            boxes._copy_extra_fields(self)
            return boxes

        ratio_width, ratio_height = ratios
        xmin, ymin, xmax, ymax = self._split_into_xyxy()
        scaled_box = torch.cat(
            (xmin * ratio_width, ymin * ratio_height, xmax * ratio_width, ymax * ratio_height),
            dim=-1,
        )
        boxes = BoxList(scaled_box, size, mode="xyxy")
        boxes._copy_extra_fields(self)
        return boxes.convert(self.mode)

    def transpose(self, method):
        if method not in (FLIP_LEFT_RIGHT, FLIP_TOP_BOTTOM):
            raise ValueError("Only FLIP_LEFT_RIGHT and FLIP_TOP_BOTTOM are implemented")

        image_width, image_height = self.size
        xmin, ymin, xmax, ymax = self._split_into_xyxy()
        if method == FLIP_LEFT_RIGHT:
            transposed_xmin = image_width - xmax - 1
            transposed_xmax = image_width - xmin - 1
            transposed_ymin, transposed_ymax = ymin, ymax
        else:
            transposed_xmin, transposed_xmax = xmin, xmax
            transposed_ymin = image_height - ymax - 1
            transposed_ymax = image_height - ymin - 1

        bbox = torch.cat((transposed_xmin, transposed_ymin, transposed_xmax, transposed_ymax), dim=-1)
        boxes = BoxList(bbox, self.size, mode="xyxy")
        boxes._copy_extra_fields(self)
        return boxes.convert(self.mode)

    def clip_to_image(self, remove_empty=True):
        TO_REMOVE = 1
        if self.mode == "xyxy":
            box = self.bbox.clone()
        else:
            box = self.convert("xyxy").bbox.clone()
        box[:, 0].clamp_(min=0, max=self.size[0] - TO_REMOVE)
        box[:, 1].clamp_(min=0, max=self.size[1] - TO_REMOVE)
        box[:, 2].clamp_(min=0, max=self.size[0] - TO_REMOVE)
        box[:, 3].clamp_(min=0, max=self.size[1] - TO_REMOVE)

        clipped = BoxList(box, self.size, mode="xyxy")
        clipped._copy_extra_fields(self)
        if remove_empty:
            keep = (box[:, 3] > box[:, 1]) & (box[:, 2] > box[:, 0])
            clipped = clipped[keep]
        return clipped.convert(self.mode)

    # --- Container protocol ---

    def to(self, device):
        boxes = BoxList(self.bbox.to(device), self.size, self.mode)
        for k, v in self.extra_fields.items():
            if hasattr(v, "to"):
                v = v.to(device)
            boxes.add_field(k, v)
        return boxes

    def __getitem__(self, item):
        boxes = BoxList(self.bbox[item], self.size, self.mode)
        for k, v in self.extra_fields.items():
            boxes.add_field(k, v[item])
        return boxes

    def __len__(self):
        return self.bbox.shape[0]

    def copy_with_fields(self, fields, skip_missing=False):
        boxes = BoxList(self.bbox, self.size, self.mode)
        if not isinstance(fields, (list, tuple)):
            fields = [fields]
        for field in fields:
            if self.has_field(field):
                boxes.add_field(field, self.get_field(field))
            elif not skip_missing:
                raise KeyError(f"Field '{field}' not found in {self}")
        return boxes

    def __repr__(self):
        s = self.__class__.__name__ + "("
        s += f"num_boxes={len(self)}, "
        s += f"image_width={self.size[0]}, "
        s += f"image_height={self.size[1]}, "
        s += f"mode={self.mode})"
        return s


def cat_boxlist(bboxes):
    """
    Concatenate a list of BoxList sharing the same image size, mode and fields.
    """
    if not isinstance(bboxes, (list, tuple)) or len(bboxes) == 0:
        raise ValueError("cat_boxlist expects a non-empty list of BoxList")

    size = bboxes[0].size
    mode = bboxes[0].mode
    fields = set(bboxes[0].fields())
    for bbox in bboxes:
        if bbox.size != size:
            raise ValueError(f"Cannot concatenate boxes of different image sizes: {bbox.size} vs {size}")
        if bbox.mode != mode:
            raise ValueError(f"Cannot concatenate boxes of different modes: {bbox.mode} vs {mode}")
        if set(bbox.fields()) != fields:
            raise ValueError("Cannot concatenate boxes with different fields")

    cat_boxes = BoxList(torch.cat([bbox.bbox for bbox in bboxes], dim=0), size, mode)
    for field in fields:
        data = torch.cat([bbox.get_field(field) for bbox in bboxes], dim=0)
        cat_boxes.add_field(field, data)
    return cat_boxes
