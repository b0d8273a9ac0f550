NETWORK_TYPE = "network_type"
N_IN = "n_in"
N_HIDDEN = "n_hidden"
DEPTH = "depth"
NDIMS = "ndims"
LOGDET = "logdet"

KERNEL_1 = "kernel_1"
KERNEL_2 = "kernel_2"
PAD_1 = "pad_1"
PAD_2 = "pad_2"
STRIDE_1 = "stride_1"
STRIDE_2 = "stride_2"

SCALES = "scales"
STEPS_PER_SCALE = "steps_per_scale"
KERNEL = "kernel"
PAD = "pad"
STRIDE = "stride"
ALPHA = "alpha"
HIDDEN_FACTOR = "hidden_factor"
N_CENTER = "n_center"
IN_SHAPE = "in_shape"
