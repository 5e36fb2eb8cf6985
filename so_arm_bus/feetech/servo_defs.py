HDR_BYTE = 0xFF
HEADER = bytes((HDR_BYTE, HDR_BYTE))

MAX_ID = 0xFC  # 252

# Instruction for SCS Protocol
INST_READ = 2
INST_WRITE = 3

# Packet indices
PKT_ID = 2
PKT_LENGTH = 3
PKT_INSTRUCTION = 4
PKT_PARAMETER0 = 5

# FF FF ID LEN ERR POS_L POS_H CHK
POSITION_RESPONSE_LEN = 8

#-------SRAM --------
SMS_STS_TORQUE_ENABLE = 40  # 0x28
SMS_STS_GOAL_POSITION_L = 42  # 0x2A
SMS_STS_PRESENT_POSITION_L = 56  # 0x38

POSITION_MIN = 0
POSITION_MAX = 4095

DEFAULT_BAUDRATE = 1000000

# SO-ARM101 wiring: ids 1..6 from the base up to the gripper
SO_ARM_MOTOR_IDS = (1, 2, 3, 4, 5, 6)
SO_ARM_MOTOR_NAMES = {
    1: "Shoulder Pan",
    2: "Shoulder Lift",
    3: "Elbow Flex",
    4: "Wrist Flex",
    5: "Wrist Roll",
    6: "Gripper",
}

# USB-serial bridges commonly found on the SO-ARM101 driver board
USB_VENDOR_IDS = {
    0x1A86: "CH340",
    0x10C4: "CP210x",
    0x0403: "FTDI",
}
